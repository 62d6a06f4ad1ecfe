from candlefetcher.fetch_main import main

main()
