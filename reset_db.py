import asyncio
import sys
import os

# Aggiungi backend/ alla PYTHONPATH per importare app.*
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

from app.core.database import close_db, recreate_schema


async def reset():
    print("Connessione al database, ricreazione dello schema di fatturazione...")
    await recreate_schema()
    await close_db()
    print("Database resettato con successo!")

if __name__ == "__main__":
    asyncio.run(reset())
