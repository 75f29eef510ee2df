from profilepool.cli import main

main()
