from career_ai.cli import main

main()
