"""
Seed de dados para testar o ciclo de vida de assinaturas.

Cria uma assinatura manual em cada status (active, pending-cancellation, expired, cancelled)
para o usuário 1 (o usuário dev com AUTH_DEV_MODE=true).

Uso (na raiz do projeto, com .env configurado):
    python scripts/seed-subscriptions.py

Requer: migrations aplicadas (alembic upgrade head).
"""

import os
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(root))
os.chdir(root)

from dotenv import load_dotenv
load_dotenv()

from subsync.database.models.subscription import Subscription
from subsync.database.session import get_session
from subsync.utils.dates import calculate_end_date, utcnow
from subsync.utils.enums import CancellationSource, PaymentMethod, PaymentStatus, SubscriptionStatus

USER_ID = 1


def main() -> None:
    now = utcnow()
    rows = [
        dict(status=SubscriptionStatus.ACTIVE),
        dict(
            status=SubscriptionStatus.PENDING_CANCELLATION,
            cancellation_source=CancellationSource.FRONTEND,
            next_billing_date=now + timedelta(days=10),
        ),
        dict(
            status=SubscriptionStatus.EXPIRED,
            payment_status=PaymentStatus.FAILED,
            retry_count=3,
            grace_period_end=now + timedelta(days=5),
        ),
        dict(status=SubscriptionStatus.CANCELLED, cancelled_at=now),
    ]
    with get_session() as session:
        for i, extra in enumerate(rows, start=1):
            payment_id = f"manual-seed-{i}"
            exists = session.query(Subscription).filter(Subscription.payment_id == payment_id).first()
            if exists:
                print(f"Already seeded: {payment_id} (id={exists.id})")
                continue
            sub = Subscription(
                user_id=USER_ID,
                plan_id="basic-monthly",
                payment_method=PaymentMethod.MANUAL,
                payment_id=payment_id,
                start_date=now,
                end_date=calculate_end_date("monthly", now),
                last_payment_date=now,
                amount=Decimal("10.00"),
                tax_amount=Decimal("0.00"),
                total_amount=Decimal("10.00"),
                customer_data={"email": "client@subsync.local"},
                **extra,
            )
            session.add(sub)
            session.flush()
            print(f"Seeded {sub.status}: id={sub.id} payment_id={payment_id}")


if __name__ == "__main__":
    main()
