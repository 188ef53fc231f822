"""Rule evaluation backends and the dispatcher that selects them."""
