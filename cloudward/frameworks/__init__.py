"""Framework, rule, and tenant configuration records and their registry."""
