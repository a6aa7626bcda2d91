from server_keeper.service import main

main()
