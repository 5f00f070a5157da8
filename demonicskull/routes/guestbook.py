"""Guestbook pages and the sign-guestbook form handler."""

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from ..guestbook import SubmissionError, build_entry, paginate, parse_page

router = APIRouter()


@router.api_route("/guestbook.html", methods=["GET", "HEAD"], response_class=HTMLResponse)
async def guestbook_page(request: Request, page: str = "1"):
    settings = request.app.state.config.guestbook
    entries = await request.app.state.entries.read_all()
    current = paginate(entries, parse_page(page), settings.entries_per_page)

    templates = request.app.state.templates
    return templates.TemplateResponse(request, "guestbook.html", {
        "page": current,
    })


@router.post("/sign-guestbook")
async def sign_guestbook(request: Request):
    settings = request.app.state.config.guestbook
    form = await request.form()

    try:
        entry = build_entry(
            dict(form),
            max_name_length=settings.max_name_length,
            max_message_length=settings.max_message_length,
        )
    except SubmissionError as e:
        print(f"[GUESTBOOK] Rejected submission: {e.code}")
        templates = request.app.state.templates
        return templates.TemplateResponse(request, "error.html", {
            "title": e.title,
            "detail": e.detail,
        }, status_code=400)

    await request.app.state.entries.append(entry)
    print(f"[GUESTBOOK] New entry from {entry['name']}")

    # POST-redirect-GET back to the guestbook
    return RedirectResponse("/guestbook.html", status_code=303)
