from sqlalchemy import Column, Float, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


class Services(Base):
    __tablename__ = 'services'

    name = Column(Text, nullable=False)
    base_price = Column(Float, nullable=False, server_default=text('0'))
    price_per_hour = Column(Float, nullable=False, server_default=text('0'))
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    id = Column(Integer, primary_key=True)
    description = Column(Text)

    bookings = relationship('Bookings', back_populates='service')


class Bookings(Base):
    __tablename__ = 'bookings'
    __table_args__ = (
        Index('idx_bookings_date_service', 'booking_date', 'service_id'),
    )

    service_id = Column(ForeignKey('services.id'))
    booking_date = Column(Text, nullable=False)  # YYYY-MM-DD
    start_time = Column(Text, nullable=False)    # HH:MM
    end_time = Column(Text, nullable=False)      # HH:MM
    duration = Column(Float)                     # hours
    status = Column(Text, nullable=False, server_default=text("'pending'"))
    created_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, nullable=False, server_default=text('CURRENT_TIMESTAMP'))
    id = Column(Integer, primary_key=True)
    notes = Column(Text)

    service = relationship('Services', back_populates='bookings')
