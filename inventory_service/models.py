from sqlalchemy import Boolean, Column, Integer, Numeric, String, TIMESTAMP, CheckConstraint
from sqlalchemy.sql import func
from .database import Base


class Product(Base):
    """Inventory ledger view of a catalog product."""

    __tablename__ = "products"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False) # Authoritative unit price, major units
    stock_count = Column(Integer, nullable=False, default=0)
    in_stock = Column(Boolean, nullable=False, default=False) # Always stock_count > 0
    status = Column(String(16), nullable=False, default="active")
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint('stock_count >= 0', name='products_stock_count_non_negative'),
    )

    def __repr__(self):
        return f"<Product(id='{self.id}', stock_count={self.stock_count}, price={self.price})>"
