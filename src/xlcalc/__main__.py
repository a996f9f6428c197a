from xlcalc.cli import main

main()
