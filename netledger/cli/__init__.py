"""netledger command-line interface."""
