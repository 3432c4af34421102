from typing import Any, BinaryIO, Dict, List, Union
from openpyxl import Workbook
from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfgen import canvas


Target = Union[str, BinaryIO]


def _header(gradebook: Dict[str, Any]) -> List[str]:
    return ["Student", "Email"] + [item["title"] for item in gradebook["items"]]


def _rows(gradebook: Dict[str, Any]) -> List[List[Any]]:
    rows = []
    for student in gradebook["students"]:
        row: List[Any] = [student["full_name"], student["email"]]
        for item in gradebook["items"]:
            grade = student["grades"].get(str(item["id"]))
            row.append(f"{grade['final_score']} ({grade['grade']})" if grade else "")
        rows.append(row)
    return rows


def export_gradebook_excel(gradebook: Dict[str, Any], target: Target) -> Target:
    wb = Workbook()
    ws = wb.active
    ws.title = "Gradebook"
    ws.append(_header(gradebook))
    for row in _rows(gradebook):
        ws.append(row)
    wb.save(target)
    return target


def export_gradebook_pdf(gradebook: Dict[str, Any], target: Target) -> Target:
    pagesize = landscape(A4)
    c = canvas.Canvas(target, pagesize=pagesize)
    width, height = pagesize
    y = height - 50
    c.setFont("Helvetica", 12)
    c.drawString(50, y, f"Gradebook: {gradebook['module_title']}")
    y -= 20
    c.setFont("Helvetica", 9)
    c.drawString(50, y, " | ".join(_header(gradebook)))
    y -= 16
    for row in _rows(gradebook):
        c.drawString(50, y, " | ".join(str(value) for value in row))
        y -= 14
        if y < 50:
            c.showPage()
            y = height - 50
            c.setFont("Helvetica", 9)
    c.save()
    return target
