"""
Executa todas as varreduras de assinaturas uma vez (o mesmo trabalho do job periódico do scheduler).

Útil via cron quando a API roda com SCHEDULER_ENABLED=false, ou para recuperar após indisponibilidade.

Uso (na raiz do projeto, com .env configurado):
    python scripts/run-sweep.py
    python scripts/run-sweep.py --purge-only

Requer: migrations aplicadas (alembic upgrade head).
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Load .env before importing subsync (session reads DATABASE_URL at import)
root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(root))
os.chdir(root)

from dotenv import load_dotenv
load_dotenv()

from subsync.core.logging import setup_logger
from subsync.core.services.subscription_service import default_subscription_service
from subsync.core.services.sweep_service import SubscriptionSweeper


def main() -> int:
    parser = argparse.ArgumentParser(description="Run subscription sweeps once")
    parser.add_argument("--purge-only", action="store_true", help="Only purge expired checkout intents")
    args = parser.parse_args()

    setup_logger()
    sweeper = SubscriptionSweeper(default_subscription_service())

    if args.purge_only:
        print(json.dumps({"intents_purged": sweeper.purge_checkout_intents()}))
        return 0

    report = sweeper.run_all()
    print(json.dumps(report.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
