"""Run the customer-commit command line tool."""

from customer_commit.tool.customer_commit import main

if __name__ == "__main__":
    main()
