"""
Ticket issuance for confirmed registrations
Produces a scannable QR code encoding the registration id
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from io import BytesIO
from uuid import UUID

import qrcode
from qrcode.image.pil import PilImage

from app.config import settings
from app.core.exceptions import TicketIssuanceError

logger = logging.getLogger(__name__)


class TicketIssuer(ABC):
    """Produces the opaque ticket artifact attached to a confirmed registration"""

    @abstractmethod
    async def issue(self, registration_id: UUID) -> str:
        """Return the ticket; raise TicketIssuanceError on failure"""
        ...


class QRCodeTicketIssuer(TicketIssuer):
    """Renders the registration id as a PNG QR code data URL"""

    def __init__(
        self,
        box_size: int = settings.TICKET_QR_BOX_SIZE,
        border: int = settings.TICKET_QR_BORDER,
    ):
        self.box_size = box_size
        self.border = border

    def generate_qr_code(self, data: str) -> bytes:
        """Generate QR code PNG bytes for ticket validation"""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(image_factory=PilImage, fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    async def issue(self, registration_id: UUID) -> str:
        try:
            # PNG encoding is CPU bound; keep it off the event loop
            png = await asyncio.to_thread(self.generate_qr_code, str(registration_id))
        except Exception as e:
            logger.error(f"Error generating QR code for registration {registration_id}: {e}")
            raise TicketIssuanceError(registration_id) from e

        return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


# Initialize global ticket issuer
ticket_issuer = QRCodeTicketIssuer()
