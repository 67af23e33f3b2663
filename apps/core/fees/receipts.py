from io import BytesIO

from PIL import Image, ImageDraw, ImageFont
from django.utils import timezone

from .exports import plain_value

PAGE_WIDTH = 1240
PAGE_HEIGHT = 1754


def _user_label(user):
    if user is None:
        return ''
    return user.get_full_name() or user.username


def receipt_payload(payment):
    invoice = payment.invoice
    student = invoice.student
    payload = {
        'receiptNo': payment.receipt_no,
        'paymentId': payment.pk,
        'status': payment.state.value,
        'isReversed': payment.is_reversed,
        'reversedAt': plain_value(payment.reversed_at) or None,
        'reversalReason': payment.reversal_reason or None,
        'school': {'id': payment.school_id, 'name': payment.school.name},
        'student': {
            'id': student.pk,
            'admissionNo': student.admission_number,
            'name': student.full_name,
        },
        'invoice': {
            'id': invoice.pk,
            'invoiceNo': invoice.invoice_no,
            'year': invoice.year,
            'term': invoice.term,
            'total': plain_value(invoice.total),
            'paid': plain_value(invoice.paid),
            'balance': plain_value(invoice.balance),
            'status': invoice.status,
        },
        'amount': plain_value(payment.amount),
        'method': payment.method,
        'reference': payment.reference,
        'receivedAt': plain_value(payment.received_at),
        'receivedBy': _user_label(payment.received_by),
    }
    return payload


def image_to_pdf_bytes(images):
    if not images:
        return b''
    rgb_images = [img.convert('RGB') for img in images]
    output = BytesIO()
    rgb_images[0].save(output, format='PDF', save_all=True, append_images=rgb_images[1:])
    return output.getvalue()


def _stamp_reversed(page):
    font = ImageFont.load_default(size=220)
    layer = Image.new('RGBA', page.size, (255, 255, 255, 0))
    draw = ImageDraw.Draw(layer)
    left, top, right, bottom = draw.textbbox((0, 0), 'REVERSED', font=font)
    x = (page.width - (right - left)) // 2
    y = (page.height - (bottom - top)) // 2
    draw.text((x, y), 'REVERSED', font=font, fill=(200, 0, 0, 70))
    layer = layer.rotate(25, center=(page.width // 2, page.height // 2))
    return Image.alpha_composite(page.convert('RGBA'), layer)


def build_receipt_image(payment):
    page = Image.new('RGB', (PAGE_WIDTH, PAGE_HEIGHT), color='white')
    draw = ImageDraw.Draw(page)
    title_font = ImageFont.load_default(size=44)
    font = ImageFont.load_default(size=28)

    invoice = payment.invoice
    student = invoice.student
    received_at = timezone.localtime(payment.received_at)

    draw.rectangle((30, 30, PAGE_WIDTH - 30, PAGE_HEIGHT - 30), outline='black', width=3)
    draw.text((60, 60), f"{payment.school.name}", fill='black', font=title_font)
    draw.text((60, 120), 'SCHOOL FEES RECEIPT', fill='black', font=title_font)

    lines = [
        f"Receipt No: {payment.receipt_no}",
        f"Date: {received_at.strftime('%Y-%m-%d %H:%M')}",
        f"Status: {payment.state.value}",
    ]
    if payment.is_reversed:
        reversed_at = timezone.localtime(payment.reversed_at).strftime('%Y-%m-%d %H:%M') if payment.reversed_at else '-'
        lines.append(f"Reversed At: {reversed_at}")
        lines.append(f"Reason: {payment.reversal_reason or '-'}")
    lines.extend(
        [
            '',
            f"Student: {student.full_name}",
            f"Admission No: {student.admission_number}",
            '',
            f"Amount Paid: {plain_value(payment.amount)}",
            f"Payment Method: {payment.method}",
            f"Reference: {payment.reference or '-'}",
            f"Received By: {_user_label(payment.received_by) or '-'}",
            '',
            f"Invoice: {invoice.invoice_no} ({invoice.year} Term {invoice.term})",
            f"Invoice Total: {plain_value(invoice.total)}",
            f"Total Paid: {plain_value(invoice.paid)}",
            f"Balance: {plain_value(invoice.balance)}",
        ]
    )

    y = 220
    for text in lines:
        if text:
            draw.text((60, y), text, fill='black', font=font)
        y += 44

    draw.text((PAGE_WIDTH // 2 - 80, y + 60), 'Thank you.', fill='black', font=font)

    if payment.is_reversed:
        page = _stamp_reversed(page)
    return page


def receipt_pdf_bytes(payment) -> bytes:
    return image_to_pdf_bytes([build_receipt_image(payment)])
