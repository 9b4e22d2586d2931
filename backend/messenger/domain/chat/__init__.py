"""Direct messaging, contacts, and presence."""
