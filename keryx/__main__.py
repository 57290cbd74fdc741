from keryx.agents.release_agent import main

if __name__ == "__main__":
    main()
