from io import BytesIO

from PIL import Image, ImageDraw

from .accounts import quantize
from .models import FeeTransaction


def image_to_pdf_bytes(images):
    if not images:
        return b''
    rgb_images = [img.convert('RGB') for img in images]
    output = BytesIO()
    rgb_images[0].save(output, format='PDF', save_all=True, append_images=rgb_images[1:])
    return output.getvalue()


def build_fee_receipt_image(fee_transaction: FeeTransaction, school_name='School'):
    width = 1240
    height = 1754
    page = Image.new('RGB', (width, height), color='white')
    draw = ImageDraw.Draw(page)

    student = fee_transaction.student
    account = fee_transaction.account

    draw.rectangle((30, 30, width - 30, height - 30), outline='black', width=3)
    draw.text((60, 60), f"{school_name} - Fee Receipt", fill='black')
    draw.text((60, 110), f"Receipt No: {fee_transaction.receipt_number}", fill='black')
    draw.text((60, 150), f"Date: {fee_transaction.transaction_date.strftime('%Y-%m-%d %H:%M')}", fill='black')
    draw.text((60, 190), f"Academic Year: {fee_transaction.academic_year}", fill='black')
    draw.text((60, 230), f"Student: {student.full_name} ({student.admission_number})", fill='black')
    draw.text((60, 270), f"Class: {student.class_name} {student.section}".rstrip(), fill='black')
    draw.text((60, 310), f"Mode: {fee_transaction.get_payment_mode_display()}", fill='black')
    draw.text((60, 350), f"Payment For: {fee_transaction.payment_for or '-'}", fill='black')

    y = 430
    draw.text((60, y), 'Months', fill='black')
    draw.text((860, y), 'Amount', fill='black')
    draw.line((60, y + 26, width - 60, y + 26), fill='black')
    y += 50

    draw.text((60, y), ', '.join(fee_transaction.paid_months or []) or '-', fill='black')
    draw.text((860, y), str(quantize(fee_transaction.amount_paid)), fill='black')
    y += 56

    draw.line((60, y, width - 60, y), fill='black')
    y += 30

    draw.text((60, y), f"Total Fee: {account.total_fee}", fill='black')
    y += 36
    draw.text((60, y), f"Total Paid To Date: {account.total_paid}", fill='black')
    y += 36
    draw.text((60, y), f"Balance: {account.balance}", fill='black')
    y += 36
    draw.text((60, y), f"Status: {account.get_status_display()}", fill='black')
    y += 70

    if fee_transaction.collected_by_id:
        collector = fee_transaction.collected_by
        draw.text((60, y), f"Collected By: {collector.get_full_name() or collector.username}", fill='black')
        y += 36
    if fee_transaction.remarks:
        draw.text((60, y), f"Remarks: {fee_transaction.remarks}", fill='black')

    return page


def generate_fee_receipt_pdf(fee_transaction: FeeTransaction, school_name='School') -> bytes:
    image = build_fee_receipt_image(fee_transaction, school_name=school_name)
    return image_to_pdf_bytes([image])
