"""Read-only access to the product catalog and its access gates."""

from sqlalchemy.orm import Session

from downloadgate.models.product import AccessGate, AccessType, Product


def get_product(db: Session, product_id: str) -> Product | None:
    return db.get(Product, product_id)


def list_products(db: Session, active_only: bool = False) -> list[Product]:
    query = db.query(Product)
    if active_only:
        query = query.filter(Product.is_active == True)  # noqa: E712
    return query.order_by(Product.created_at, Product.id).all()


def get_enabled_gates(db: Session, product_id: str) -> list[AccessGate]:
    return (
        db.query(AccessGate)
        .filter(
            AccessGate.product_id == product_id,
            AccessGate.is_enabled == True,  # noqa: E712
        )
        .all()
    )


def get_enabled_gate(db: Session, product: Product) -> AccessGate | None:
    """
    Return the single enabled gate guarding a gated product.

    Returns None when the catalog is misconfigured: no enabled gate, more than
    one, or a gate whose type does not match the product's access type. Free
    products never have a gate.
    """
    if product.access_type == AccessType.FREE:
        return None

    gates = get_enabled_gates(db, product.id)
    if len(gates) != 1:
        return None

    gate = gates[0]
    if gate.gate_type != product.access_type:
        return None
    return gate


def list_gates(db: Session, product_id: str) -> list[AccessGate]:
    """Every gate of a product, enabled or not."""
    return (
        db.query(AccessGate)
        .filter(AccessGate.product_id == product_id)
        .order_by(AccessGate.name, AccessGate.id)
        .all()
    )
