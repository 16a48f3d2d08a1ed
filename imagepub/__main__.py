from imagepub.cli.app import main

main()
