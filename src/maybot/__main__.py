from maybot.main import main

main()
