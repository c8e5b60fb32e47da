from .base import Base
from .profile import Profile, ProfileRole
from .booking import Booking, BookingPayment, BookingPaymentStatus
from .affiliate import AffiliateCode, Attribution
from .commission import CommissionRecord, CommissionStatus, PayoutBatch, PayoutStatus
