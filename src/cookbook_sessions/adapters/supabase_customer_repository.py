"""Supabase-backed customer repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from cookbook_sessions.domain.orders import Customer
from cookbook_sessions.services.sessions import CustomerRepository


@dataclass
class SupabaseCustomerRepository(CustomerRepository):
    """Supabase implementation for customers and their recipe credits."""

    client: Client

    def get_by_email(self, email: str) -> Customer | None:
        """Return the customer for an email, if present."""
        response = (
            self.client.table("customers")
            .select(
                "email, available_recipes, lifetime_recipes_used, lifetime_purchases"
            )
            .eq("email", email)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return Customer(
            email=row["email"],
            available_recipes=int(row.get("available_recipes") or 0),
            lifetime_recipes_used=int(row.get("lifetime_recipes_used") or 0),
            lifetime_purchases=int(row.get("lifetime_purchases") or 0),
        )

    def save_customer(self, customer: Customer) -> None:
        """Insert or update a customer row."""
        self.client.table("customers").upsert(
            {
                "email": customer.email,
                "available_recipes": customer.available_recipes,
                "lifetime_recipes_used": customer.lifetime_recipes_used,
                "lifetime_purchases": customer.lifetime_purchases,
                "updated_at": datetime.now(tz=UTC).isoformat(),
            },
            on_conflict="email",
        ).execute()
