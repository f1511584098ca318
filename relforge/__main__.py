from relforge.cli.app import main

main()
