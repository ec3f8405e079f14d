from session_broker.main import main

main()
