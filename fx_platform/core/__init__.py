"""Core domain logic: money, accounts, exchange venue, conversions, payments and the outbox."""
