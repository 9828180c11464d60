"""
Seed script: records a few demo conversations into the lead store.
Run: python -m scripts.seed_dev
"""

import asyncio
import os
import sys

from dotenv import load_dotenv

from leadtracker.modules.leads.products import detect_products, load_products
from leadtracker.modules.leads.store import LeadStore

load_dotenv()

CONVERSATIONS = [
    {
        "number": "5511999990001",
        "name": "Maria Souza",
        "tags": ["Novo cliente"],
        "messages": [
            "Oi, quero o Café Especial 250g",
            "Vocês entregam em Campinas?",
        ],
    },
    {
        "number": "5511999990002",
        "name": "João Lima",
        "tags": ["Atacado"],
        "messages": [
            "Bom dia! Qual o preço do café gourmet?",
            "E as cápsulas espresso, têm em estoque?",
            "Quero fechar um kit degustação também",
        ],
    },
    {
        "number": "5521988880003",
        "name": "Ana Paula",
        "tags": [],
        "messages": ["Olá, vi o anúncio de vocês"],
    },
]


async def seed():
    leads_file = os.getenv("LEADS_FILE", "leads.json")
    products_file = os.getenv("PRODUCTS_FILE", "config/products.json")

    store = LeadStore(leads_file)
    products = load_products(products_file)
    if not products:
        print(f"ERROR: no products loaded from {products_file}")
        sys.exit(1)

    existing = await store.get_all()
    if CONVERSATIONS[0]["number"] in existing:
        print(f"Demo leads already present in {leads_file}. Skipping seed.")
        return

    for conv in CONVERSATIONS:
        for text in conv["messages"]:
            await store.record_message(
                conv["number"], conv["name"], text, detect_products(text, products), conv["tags"],
            )
        print(f"Created lead: {conv['name']} ({conv['number']}), {len(conv['messages'])} messages")

    print("\nSeed complete!")
    print(f"  Leads file: {leads_file}")


if __name__ == "__main__":
    asyncio.run(seed())
