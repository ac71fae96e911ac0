"""Per-entity-type migration strategies.

Each entity type is described declaratively: which source collection it is
read from, which table it is written to, how source fields map to columns,
which columns are safe to drop when the target schema lags behind, which
columns hold blob references, and which other entity types it references.
Adding an entity type means adding one entry to ``ENTITY_REGISTRY``.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

# Marker default: "current UTC time" at transform time.
NOW = object()


@dataclass(frozen=True)
class Column:
    """A normalized target column and where its value comes from."""
    name: str
    sources: Tuple[str, ...]
    transform: str = "direct"
    default: Any = None


def col(
    name: str,
    sources: Union[str, Sequence[str], None] = None,
    transform: str = "direct",
    default: Any = None
) -> Column:
    """Build a Column; ``sources`` defaults to the column name itself."""
    if sources is None:
        sources = (name,)
    elif isinstance(sources, str):
        sources = (sources,)
    return Column(name=name, sources=tuple(sources), transform=transform, default=default)


def timestamps() -> List[Column]:
    return [
        col("created_at", ("createdAt", "created_at"), "timestamp", NOW),
        col("updated_at", ("updatedAt", "updated_at"), "timestamp", NOW),
    ]


@dataclass(frozen=True)
class EntityStrategy:
    """How one entity type is extracted, transformed and written."""
    name: str
    collection: str
    table: str
    columns: Tuple[Column, ...]
    on_conflict: str = "id"
    id_fields: Tuple[str, ...] = ("id",)
    droppable_fields: Tuple[str, ...] = ()
    blob_columns: Tuple[str, ...] = ()
    references: Tuple[str, ...] = ()
    label_columns: Tuple[str, ...] = ()
    concurrency: int = 30

    @property
    def known_fields(self) -> frozenset:
        """Source field names consumed by the id lookup or a column."""
        names = set(self.id_fields)
        for column in self.columns:
            names.update(column.sources)
        return frozenset(names)

    def fallback_projection(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """``data`` without the droppable fields, or None if none are present."""
        present = [f for f in self.droppable_fields if f in data]
        if not present:
            return None
        return {k: v for k, v in data.items() if k not in present}

    def describe(self, data: Dict[str, Any]) -> str:
        """Human-readable label for log lines."""
        parts = [str(data[c]) for c in self.label_columns if data.get(c)]
        label = " ".join(parts)
        natural_key = data.get(self.on_conflict)
        if label and label != str(natural_key):
            return f"{label} (ID: {natural_key})"
        return str(natural_key)


USERS = EntityStrategy(
    name="users",
    collection="users",
    table="users",
    on_conflict="email",
    concurrency=20,
    columns=(
        col("email", transform="lowercase_email"),
        col("name", default=""),
        col("mobile"),
        col("password"),
        col("role", default="customer"),
        col("status", default="active"),
        col("avatar_url", ("avatarUrl", "avatar_url")),
        col("is_verified", "isVerified", "boolean", False),
        col("dealership_name", "dealershipName"),
        col("bio"),
        col("logo_url", ("logoUrl", "logo_url")),
        col("subscription_plan", "subscriptionPlan", default="free"),
        col("featured_credits", "featuredCredits", "integer", 0),
        col("used_certifications", "usedCertifications", "integer", 0),
        col("phone_verified", "phoneVerified", "boolean", False),
        col("email_verified", "emailVerified", "boolean", False),
        col("govt_id_verified", "govtIdVerified", "boolean", False),
        col("trust_score", "trustScore", "integer"),
        col("location", transform="text"),
        col("address", transform="text"),
        col("firebase_uid", "firebaseUid"),
        col("auth_provider", "authProvider", default="email"),
        *timestamps(),
    ),
    droppable_fields=("password", "address", "metadata"),
    blob_columns=("avatar_url", "logo_url"),
    label_columns=("email",),
)

VEHICLES = EntityStrategy(
    name="vehicles",
    collection="vehicles",
    table="vehicles",
    columns=(
        col("category"),
        col("make", default=""),
        col("model", default=""),
        col("variant"),
        col("year", transform="integer"),
        col("price", transform="number", default=0),
        col("mileage", transform="number"),
        col("images", transform="string_list", default=()),
        col("features", transform="string_list", default=()),
        col("description"),
        col("seller_email", "sellerEmail", "lowercase_email"),
        col("seller_name", "sellerName"),
        col("engine"),
        col("transmission"),
        col("fuel_type", "fuelType"),
        col("fuel_efficiency", "fuelEfficiency", "text"),
        col("color"),
        col("status", default="published"),
        col("is_featured", "isFeatured", "boolean", False),
        col("views", transform="integer", default=0),
        col("inquiries_count", "inquiriesCount", "integer", 0),
        col("registration_year", "registrationYear", "integer"),
        col("insurance_validity", "insuranceValidity", "text"),
        col("insurance_type", "insuranceType"),
        col("rto"),
        col("city"),
        col("state"),
        col("no_of_owners", "noOfOwners", "integer"),
        col("displacement", transform="text"),
        col("ground_clearance", "groundClearance", "text"),
        col("boot_space", "bootSpace", "text"),
        *timestamps(),
    ),
    droppable_fields=("metadata",),
    blob_columns=("images",),
    references=("users",),
    label_columns=("make", "model"),
)

CONVERSATIONS = EntityStrategy(
    name="conversations",
    collection="conversations",
    table="conversations",
    columns=(
        col("customer_id", "customerId"),
        col("seller_id", "sellerId"),
        col("vehicle_id", "vehicleId", "text"),
        col("customer_name", "customerName"),
        col("seller_name", "sellerName"),
        col("vehicle_name", "vehicleName"),
        col("vehicle_price", "vehiclePrice", "number"),
        col("last_message", "lastMessage"),
        col("last_message_at", "lastMessageAt", "timestamp"),
        col("is_read_by_seller", "isReadBySeller", "boolean", False),
        col("is_read_by_customer", "isReadByCustomer", "boolean", True),
        col("is_flagged", "isFlagged", "boolean", False),
        col("flag_reason", "flagReason"),
        col("flagged_at", "flaggedAt", "timestamp"),
        *timestamps(),
    ),
    droppable_fields=("flagged_at",),
    references=("users", "vehicles"),
)

NOTIFICATIONS = EntityStrategy(
    name="notifications",
    collection="notifications",
    table="notifications",
    columns=(
        col("user_id", ("userId", "user_id")),
        col("type"),
        col("title"),
        col("message", ("message", "body")),
        col("read", transform="boolean", default=False),
        col("created_at", ("createdAt", "created_at"), "timestamp", NOW),
    ),
    droppable_fields=("metadata",),
    references=("users",),
    label_columns=("title",),
)

NEW_CARS = EntityStrategy(
    name="new_cars",
    collection="newCars",
    table="new_cars",
    columns=(
        col("brand_name", ("brand_name", "brandName")),
        col("model_name", ("model_name", "modelName")),
        col("model_year", ("model_year", "modelYear"), "integer"),
        col("price", transform="number"),
        col("images", transform="string_list", default=()),
        col("features", transform="string_list", default=()),
        col("description"),
        *timestamps(),
    ),
    droppable_fields=("metadata",),
    blob_columns=("images",),
    label_columns=("brand_name", "model_name"),
)

PLANS = EntityStrategy(
    name="plans",
    collection="plans",
    table="plans",
    id_fields=("planId", "id"),
    columns=(
        col("name"),
        col("price", transform="number", default=0),
        col("duration", transform="text"),
        col("features", transform="string_list", default=()),
        *timestamps(),
    ),
    droppable_fields=("metadata",),
    label_columns=("name",),
)

SERVICE_PROVIDERS = EntityStrategy(
    name="service_providers",
    collection="serviceProviders",
    table="service_providers",
    columns=(
        col("name"),
        col("email", transform="lowercase_email"),
        col("phone", transform="text"),
        col("location", transform="text"),
        col("services", transform="string_list", default=()),
        col("rating", transform="number"),
        *timestamps(),
    ),
    droppable_fields=("metadata",),
    label_columns=("name",),
)

SERVICE_REQUESTS = EntityStrategy(
    name="service_requests",
    collection="serviceRequests",
    table="service_requests",
    columns=(
        col("user_id", ("userId", "user_id")),
        col("provider_id", ("providerId", "provider_id")),
        col("service_type", ("serviceType", "service_type")),
        col("status", default="pending"),
        *timestamps(),
    ),
    droppable_fields=("metadata",),
    references=("users", "service_providers"),
)


ENTITY_REGISTRY: Dict[str, EntityStrategy] = {
    s.name: s
    for s in (
        USERS,
        VEHICLES,
        CONVERSATIONS,
        NOTIFICATIONS,
        NEW_CARS,
        PLANS,
        SERVICE_PROVIDERS,
        SERVICE_REQUESTS,
    )
}


def get_strategy(name: str) -> EntityStrategy:
    try:
        return ENTITY_REGISTRY[name]
    except KeyError:
        raise KeyError(
            f"Unknown entity type '{name}'. Known: {', '.join(ENTITY_REGISTRY)}"
        ) from None


def migration_order(
    names: Optional[Sequence[str]] = None,
    registry: Optional[Dict[str, EntityStrategy]] = None
) -> List[str]:
    """
    Order entity types so that referenced types come first.

    Ties keep the declared (registry) order. References to types outside the
    selection are ignored; a reference cycle raises ValueError.
    """
    registry = registry if registry is not None else ENTITY_REGISTRY
    selected = [n for n in registry if names is None or n in names]
    unknown = [n for n in (names or []) if n not in registry]
    if unknown:
        raise KeyError(f"Unknown entity type(s): {', '.join(unknown)}")

    pending = {n: {r for r in registry[n].references if r in selected and r != n} for n in selected}
    ordered: List[str] = []

    while pending:
        ready = [n for n in selected if n in pending and not pending[n]]
        if not ready:
            raise ValueError(f"Reference cycle among: {', '.join(sorted(pending))}")
        name = ready[0]
        ordered.append(name)
        del pending[name]
        for deps in pending.values():
            deps.discard(name)

    return ordered
