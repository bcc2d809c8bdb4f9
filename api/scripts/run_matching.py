import argparse
import asyncio
import random
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from coffeechat.database import SessionLocal, engine
from coffeechat.errors import RejectedOperation
from coffeechat.services.platform import HttpPlatformGateway
from coffeechat.services.scheduler import rematch


async def _run(args: argparse.Namespace) -> None:
    gateway = HttpPlatformGateway()
    rng = random.Random(args.seed) if args.seed is not None else None
    try:
        async with SessionLocal() as db:
            outcome = await rematch(db, gateway, args.tenant_id, datetime.now(timezone.utc), force=args.force, rng=rng)
            await db.commit()
    except RejectedOperation as exc:
        print(f"Matching refused: {exc.detail}")
        raise SystemExit(1)
    finally:
        await gateway.aclose()
        await engine.dispose()

    print(f"Matching {outcome.status} for tenant {args.tenant_id}")
    print(f"- eligible: {outcome.eligible_count}")
    print(f"- pairings: {len(outcome.pairings)}")
    for pairing in outcome.pairings:
        members = " + ".join(m for m in (pairing["user_a"], pairing["user_b"], pairing.get("user_c")) if m)
        flag = " (needs coordination)" if pairing.get("needs_coordination") else ""
        print(f"  {members} -> {pairing['assigned_slot_label']}{flag}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run coffee chat matching for one tenant now")
    parser.add_argument("tenant_id", type=str)
    parser.add_argument("--force", action="store_true", help="clear completed chats and pending reports first")
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
