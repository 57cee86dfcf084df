"""Service layer: business rules over SQLModel sessions."""
