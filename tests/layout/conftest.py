"""Shared fixtures for layout tests.

Builders here keep the test modules focused on behaviour: ``node`` makes a
VisualNode from a few keywords, ``group`` a SemanticGroup, and ``snapshot``
wraps them in a 1280x720 LayoutSnapshot.
"""

import pytest

from layout_sentinel.layout.models import (
    AccessibilityInfo,
    LayoutSnapshot,
    Rect,
    SemanticGroup,
    SemanticType,
    VisualNode,
)

VIEWPORT = {"width": 1280, "height": 720}


def make_node(
    tag="div",
    x=0,
    y=0,
    width=100,
    height=50,
    class_name="",
    id="",
    text=None,
    role=None,
    aria_label=None,
    children=(),
    **kwargs,
):
    accessibility = kwargs.pop("accessibility", None) or AccessibilityInfo(role=role, aria_label=aria_label)
    return VisualNode(
        tag_name=tag,
        rect=Rect(x, y, width, height),
        class_name=class_name,
        id=id,
        text=text,
        accessibility=accessibility,
        children=tuple(children),
        **kwargs,
    )


def make_group(
    type=SemanticType.SECTION,
    x=0,
    y=0,
    width=1280,
    height=500,
    importance=50,
    label="",
    id="group-0",
    children=None,
    elements=None,
):
    return SemanticGroup(
        id=id,
        type=SemanticType(type),
        bounds=Rect(x, y, width, height),
        importance=importance,
        label=label,
        elements=list(elements or []),
        children=list(children or []),
    )


def make_snapshot(elements=(), groups=None, url="https://example.com", viewport=None):
    return LayoutSnapshot(
        url=url,
        viewport=dict(viewport or VIEWPORT),
        elements=tuple(elements),
        semantic_groups=tuple(groups) if groups is not None else None,
        timestamp="2024-01-01T00:00:00+00:00",
    )


@pytest.fixture
def node():
    """Factory fixture for VisualNode instances."""
    return make_node


@pytest.fixture
def group():
    """Factory fixture for SemanticGroup instances."""
    return make_group


@pytest.fixture
def snapshot():
    """Factory fixture for LayoutSnapshot instances."""
    return make_snapshot


@pytest.fixture
def page_snapshot():
    """A small page: header, navigation, hero section and footer."""
    elements = [
        make_node("header", 0, 0, 1280, 80, class_name="site-header"),
        make_node("nav", 0, 80, 1280, 50, class_name="main-nav", role="navigation"),
        make_node("h1", 40, 160, 600, 60, text="Welcome to the store"),
        make_node("button", 40, 240, 160, 44, class_name="btn primary", text="Shop now"),
        make_node("p", 40, 300, 800, 120, text="Our catalogue has everything you need for the season."),
        make_node("footer", 0, 640, 1280, 80, class_name="site-footer"),
    ]
    groups = [
        make_group(SemanticType.NAVIGATION, 0, 80, 1280, 50, importance=80, label="nav.main-nav", id="group-1"),
        make_group(
            SemanticType.SECTION,
            0,
            130,
            1280,
            500,
            importance=60,
            label="section.hero",
            id="group-2",
            children=[
                make_group(SemanticType.CONTENT, 40, 300, 800, 120, importance=55, label="p", id="group-3"),
            ],
        ),
        make_group(SemanticType.CONTAINER, 0, 640, 1280, 80, importance=25, label="footer.site-footer", id="group-4"),
    ]
    return make_snapshot(elements, groups)
