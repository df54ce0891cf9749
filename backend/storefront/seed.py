import click
from flask import current_app
from flask.cli import with_appcontext

SEED_PRODUCTS = [
    {
        "title": "Custom Name Board",
        "slug": "custom-name-board",
        "description": "Laser-cut customizable name board",
        "price": 899,
        "category": "nameboard",
        "isCustomizable": True,
        "customizationSchema": {
            "text": {"type": "text", "label": "Text", "default": "Your Name"},
            "fontFamily": {
                "type": "select",
                "label": "Font",
                "options": ["serif", "sans-serif", "monospace"],
                "default": "serif",
            },
            "fontSize": {"type": "range", "label": "Size", "min": 18, "max": 120, "default": 48},
            "color": {"type": "color", "label": "Color", "default": "#111827"},
            "material": {
                "type": "select",
                "label": "Material",
                "options": ["Plywood", "Acrylic", "Metal"],
                "default": "Plywood",
            },
        },
    },
    {
        "title": "Engraved Gift Box",
        "slug": "engraved-gift-box",
        "description": "Personalized gift box",
        "price": 499,
        "category": "gift",
        "isCustomizable": True,
        "customizationSchema": {
            "text": {"type": "text", "label": "Message", "default": "Happy Birthday"},
            "fontFamily": {
                "type": "select",
                "label": "Font",
                "options": ["serif", "sans-serif"],
                "default": "sans-serif",
            },
            "color": {"type": "color", "label": "Ink Color", "default": "#111827"},
        },
    },
    {
        "title": "Precision Gear",
        "slug": "precision-gear",
        "description": "High precision component",
        "price": 1299,
        "category": "component",
        "isCustomizable": False,
    },
]


@click.command("seed-products")
@with_appcontext
def seed_products_command():
    """Insert the demo catalog, updating products that already exist."""
    catalog = current_app.extensions["storefront"]["catalog"]
    inserted = catalog.seed(SEED_PRODUCTS)
    click.echo(
        f"Seed complete: {inserted} inserted, {len(SEED_PRODUCTS) - inserted} updated."
    )
