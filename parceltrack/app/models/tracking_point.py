"""
Tracking point database model.

Stores the GPS breadcrumb trail of a parcel. Rows are only ever inserted.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime, UniqueConstraint
from parceltrack.app.db.session import Base


class TrackingPoint(Base):
    """
    One location sample reported by the assigned agent.

    ``seq`` numbers samples per parcel starting at 1; insertion order is
    chronological order.
    """
    __tablename__ = "parcel_tracking_points"
    __table_args__ = (
        UniqueConstraint("parcel_id", "seq", name="uq_tracking_point_parcel_seq"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    parcel_id = Column(Integer, ForeignKey('parcels.id'), nullable=False, index=True)
    seq = Column(Integer, nullable=False)

    # GPS coordinates
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)

    recorded_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<TrackingPoint(parcel_id={self.parcel_id}, seq={self.seq}, lat={self.lat}, lng={self.lng})>"
