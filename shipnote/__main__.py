from shipnote.cli import main

main()
