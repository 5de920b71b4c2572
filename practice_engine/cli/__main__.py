from practice_engine.cli.main import main

main()
