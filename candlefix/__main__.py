from candlefix.main import main

main()
