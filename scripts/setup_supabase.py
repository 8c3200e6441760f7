"""Create the chat_threads mirror table in Supabase and publish it for realtime."""
import asyncio
import sys

from supabase import acreate_client

from chat_relay.config import MIRROR_TABLE, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_URL

CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS public.{MIRROR_TABLE} (
    id TEXT PRIMARY KEY,
    title TEXT,
    user_id TEXT,
    messages JSONB,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT now(),
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT now()
);
"""

# exec_sql must exist as a SQL function in the project
ENABLE_REALTIME_SQL = f"""
BEGIN;
  DROP PUBLICATION IF EXISTS supabase_realtime;
  CREATE PUBLICATION supabase_realtime FOR TABLE public.{MIRROR_TABLE};
COMMIT;
"""


async def main() -> int:
    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        print("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY.")
        return 1

    client = await acreate_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)

    print(f"Creating {MIRROR_TABLE} table...")
    await client.rpc("exec_sql", {"sql": CREATE_TABLE_SQL}).execute()

    print(f"Enabling real-time for {MIRROR_TABLE}...")
    await client.rpc("exec_sql", {"sql": ENABLE_REALTIME_SQL}).execute()

    print("Supabase setup complete.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
