import logging

from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()


def send_email(to, subject, body):
    """Generic email sender"""
    msg = Message(subject, recipients=[to], body=body)
    mail.send(msg)


def send_donation_confirmation(to, name, donation):
    """Best-effort "listing is live" email to the donor."""
    if not to:
        return False
    try:
        send_email(
            to,
            "🎁 Donation Listed - FoodLink",
            (
                f"Hi {name or 'Donor'},\n\n"
                f"Thank you for listing '{donation.food_type}' ({donation.quantity}).\n\n"
                f"It is visible to NGOs and riders until "
                f"{donation.expiry_date_time.strftime('%d %b %Y, %H:%M UTC')}.\n\n"
                f"Warm regards,\nThe FoodLink Team 🌱"
            ),
        )
        return True
    except Exception as email_err:
        logger.error(f"⚠️ Email sending failed for donation {donation.id}: {email_err}")
        return False
