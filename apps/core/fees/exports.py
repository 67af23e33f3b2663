import csv
from datetime import date, datetime
from decimal import Decimal
from io import BytesIO, StringIO

from django.http import HttpResponse
from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .exceptions import ValidationError

EXPORT_CSV = 'csv'
EXPORT_XLSX = 'xlsx'
EXPORT_TYPES = (EXPORT_CSV, EXPORT_XLSX)

XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def parse_export_type(value):
    """``None`` for a JSON response, otherwise one of EXPORT_TYPES."""
    if value in (None, ''):
        return None
    export_type = str(value).strip().lower()
    if export_type not in EXPORT_TYPES:
        raise ValidationError(
            f"Invalid export. Use one of: {', '.join(EXPORT_TYPES)}",
            field='export',
        )
    return export_type


def plain_value(value):
    """Cell text shared by JSON rows and CSV files."""
    if value is None:
        return ''
    if isinstance(value, dict):
        return {key: plain_value(item) for key, item in value.items()}
    if isinstance(value, Decimal):
        return f'{value:.2f}'
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def sheet_value(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def plain_rows(report):
    return [{column.key: plain_value(row.get(column.key)) for column in report.columns} for row in report.rows]


def rows_to_csv_bytes(headers, rows):
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return output.getvalue().encode('utf-8')


def report_to_csv_bytes(report):
    rows = ([plain_value(value) for value in report.values(row)] for row in report.rows)
    return rows_to_csv_bytes(report.headers, rows)


def report_to_xlsx_bytes(report):
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = report.sheet_title[:31]

    sheet.append(report.headers)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for index, column in enumerate(report.columns, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = column.width

    for row in report.rows:
        sheet.append([sheet_value(value) for value in report.values(row)])

    output = BytesIO()
    workbook.save(output)
    return output.getvalue()


def export_response(report, export_type):
    if export_type == EXPORT_CSV:
        response = HttpResponse(report_to_csv_bytes(report), content_type='text/csv')
        response['Content-Disposition'] = f'attachment; filename="{report.filename}.csv"'
        return response

    if export_type == EXPORT_XLSX:
        response = HttpResponse(report_to_xlsx_bytes(report), content_type=XLSX_CONTENT_TYPE)
        response['Content-Disposition'] = f'attachment; filename="{report.filename}.xlsx"'
        return response

    raise ValidationError(f'Unsupported export type: {export_type}', field='export')
