"""Homepage with the live visitor counter."""

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from ..guestbook import format_counter

router = APIRouter()


@router.api_route("/", methods=["GET", "HEAD"], response_class=HTMLResponse)
@router.api_route("/index.html", methods=["GET", "HEAD"], response_class=HTMLResponse)
async def homepage(request: Request):
    count = await request.app.state.counter.increment()
    templates = request.app.state.templates
    return templates.TemplateResponse(request, "index.html", {
        "visitor_count": format_counter(count),
    })
