from icntrack.cli import main

main()
