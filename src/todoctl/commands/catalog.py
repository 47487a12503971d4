"""Command group: discover tools and read resources."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from todoctl.commands._base import TodoGroup

if TYPE_CHECKING:
    from todoctl.commands._context import AppContext


@click.group(
    cls=TodoGroup,
    examples="""\
  todoctl catalog tools
  todoctl catalog resources
  todoctl catalog read list://statistics
  todoctl --json catalog read system://capabilities""",
)
def catalog() -> None:
    """List available tools and resources, or read a resource."""


@catalog.command(
    examples="""\
  todoctl catalog tools
  todoctl catalog tools --category item-management
  todoctl -q catalog tools""",
)
@click.option("--category", default=None, help="Only tools in this category.")
@click.pass_obj
def tools(app: AppContext, category: str | None) -> None:
    """List the commands exposed as tools."""
    found = app.plane.router.get_available_tools()
    if category:
        found = [t for t in found if t.category == category]
    app.emit(found)


@catalog.command(
    examples="""\
  todoctl catalog resources
  todoctl -v catalog resources""",
)
@click.pass_obj
def resources(app: AppContext) -> None:
    """List readable resource URIs."""
    app.emit(app.plane.router.get_available_resources())


@catalog.command(
    examples="""\
  todoctl catalog read list://schema
  todoctl catalog read item://statistics
  todoctl catalog read system://version""",
)
@click.argument("uri")
@click.pass_obj
def read(app: AppContext, uri: str) -> None:
    """Print the content behind URI."""
    from todoctl.services.catalog import UnknownResourceError

    try:
        content = app.plane.router.read_resource(uri)
    except UnknownResourceError as exc:
        app.fail(str(exc))
        return
    app.emit(content)
