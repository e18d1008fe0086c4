"""
Seed script: Populate the billing database with realistic field-services data.

What it creates:
- Customers (default 25) with unique emails.
- Jobs per customer across the three job types (skip rental, sand delivery,
  forklift service) in every status, with type-specific fields.
- Invoices from completed jobs, going through the real services so numbering,
  totals and job links follow the same rules as the API. Mix of
  DRAFT / SENT / DELIVERED / PAID / CANCELLED.
- Receipts grouping paid invoices of each customer.

Run from the project root (uses DATABASE_URL or POSTGRES_* from the environment / .env):
    python scripts/seed_demo_data.py --customers 25 --jobs-per-customer 8 --seed 42

Note: This is intended for development environments only.
"""

# Add project root to sys.path so `app.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import random
from datetime import timedelta
from decimal import Decimal

from app.common.exceptions import BillingError
from app.common.mixins import utcnow
from app.database.database import SessionLocal, Base, engine
from app.modules.customers.models import Customer
from app.modules.jobs.models import (
    JobType, JobStatus, SkipType, SandMaterialType, SandDeliveryMethod, ForkliftSize
)
from app.modules.jobs.schemas import JobCreate
from app.modules.jobs.service import JobService
from app.modules.invoices.models import InvoiceStatus, PaymentMethod
from app.modules.invoices.schemas import InvoiceCreate, InvoicePaymentRequest
from app.modules.invoices.service import InvoiceService
from app.modules.receipts.schemas import ReceiptCreate
from app.modules.receipts.service import ReceiptService

COMPANY_NAMES = [
    "Harbour Construction", "Troodos Builders", "Akamas Renovations", "Larnaca Dock Works",
    "Paphos Villas", "Kyrenia Stoneworks", "Limassol Marina Services", "Nicosia Paving",
    "Famagusta Developments", "Pissouri Estates", "Polis Landscaping", "Ayia Napa Resorts",
]
STREETS = [
    "Makarios Ave", "Anexartisias St", "Harbour Road", "Griva Digeni Ave", "Archbishop Kyprianou St",
    "Spyrou Kyprianou Ave", "Tombs of the Kings Rd", "Ledra St", "Apostolou Pavlou Ave",
]
CITIES = ["Limassol", "Nicosia", "Larnaca", "Paphos", "Ayia Napa"]
PRICE_RANGES = {
    JobType.SKIP_RENTAL: (60, 180),
    JobType.SAND_DELIVERY: (40, 400),
    JobType.FORKLIFT_SERVICE: (150, 900),
}


def pick(seq):
    return random.choice(seq)


def random_address():
    return f"{random.randint(1, 120)} {pick(STREETS)}, {pick(CITIES)}"


def create_customers(db, count: int):
    customers = []
    for i in range(count):
        name = f"{pick(COMPANY_NAMES)} {i + 1:02d}"
        email = f"accounts{i + 1:02d}@{name.split()[0].lower()}.example.com"
        existing = db.query(Customer).filter(Customer.email == email, Customer.is_deleted == False).first()
        if existing:
            customers.append(existing)
            continue
        customer = Customer(
            name=name,
            email=email,
            phone=f"+357 2{random.randint(1000000, 9999999)}",
            vat_number=f"CY{random.randint(10000000, 99999999)}X",
        )
        db.add(customer)
        customers.append(customer)
    db.commit()
    return customers


def job_payload(customer, job_type: JobType, status: JobStatus):
    start = utcnow() - timedelta(days=random.randint(2, 90), hours=random.randint(0, 10))
    low, high = PRICE_RANGES[job_type]
    payload = {
        "customer_id": customer.id,
        "address": random_address(),
        "type": job_type,
        "status": status,
        "price": Decimal(random.randint(low * 100, high * 100)) / 100,
        "start_date": start,
        "end_date": start + timedelta(hours=random.randint(2, 48)) if status == JobStatus.COMPLETED else None,
    }
    if job_type == JobType.SKIP_RENTAL:
        skip_type = pick(list(SkipType))
        payload.update(
            title=f"{skip_type.value.replace('_', ' ').title()} rental",
            skip_type=skip_type,
            skip_number=f"SK-{random.randint(100, 999)}",
        )
    elif job_type == JobType.SAND_DELIVERY:
        material = pick(list(SandMaterialType))
        payload.update(
            title=f"{material.value.replace('_', ' ').capitalize()}, {random.randint(1, 12)} tons",
            sand_material_type=material,
            sand_delivery_method=pick(list(SandDeliveryMethod)),
        )
    else:
        size = pick(list(ForkliftSize))
        payload.update(title=f"Forklift {size.value}, {random.randint(2, 8)} hours", forklift_size=size)
    return JobCreate(**payload)


def create_jobs(db, customers, jobs_per_customer: int):
    service = JobService(db)
    created = 0
    for customer in customers:
        for _ in range(jobs_per_customer):
            # Mayoría completados para tener material facturable
            status = random.choices(
                [JobStatus.COMPLETED, JobStatus.ACTIVE, JobStatus.NEW, JobStatus.CANCELLED],
                weights=[65, 15, 12, 8]
            )[0]
            service.create_job(job_payload(customer, pick(list(JobType)), status))
            created += 1
    print(f"  Jobs created: {created}")
    return created


def create_invoices(db, customers):
    """Factura los trabajos completados de cada cliente en grupos de 1 a 4."""
    job_service = JobService(db)
    service = InvoiceService(db)
    counts = {}
    for customer in customers:
        pending = job_service.get_completed_uninvoiced(customer.id)
        while pending:
            size = random.randint(1, 4)
            batch, pending = pending[:size], pending[size:]
            try:
                invoice = service.create_invoice(InvoiceCreate(
                    customer_id=customer.id,
                    job_ids=[job.id for job in batch],
                    payment_terms_days=pick([7, 14, 30, 30, 60]),
                ))
                outcome = advance_invoice(service, invoice)
            except BillingError as e:
                print(f"  Skipped invoice for customer {customer.name}: {e}")
                continue
            counts[outcome] = counts.get(outcome, 0) + 1
    return counts


def advance_invoice(service: InvoiceService, invoice):
    roll = random.random()
    if roll < 0.2:
        return "draft"
    if roll < 0.27:
        service.cancel_invoice(invoice.id)
        return "cancelled"

    service.mark_as_sent(invoice.id)
    if roll < 0.5:
        return "sent"
    if roll < 0.62:
        service.mark_as_delivered(invoice.id)
        return "delivered"

    service.mark_as_paid(invoice.id, InvoicePaymentRequest(
        payment_date=utcnow().date(),
        payment_method=pick(list(PaymentMethod)),
        payment_reference=f"PAY-{random.randint(10000, 99999)}",
    ))
    return "paid"


def create_receipts(db, customers):
    invoice_service = InvoiceService(db)
    service = ReceiptService(db)
    created = 0
    for customer in customers:
        paid = invoice_service.get_invoices(customer_id=customer.id, status=InvoiceStatus.PAID).invoices
        if not paid:
            continue
        service.create_receipt(ReceiptCreate(customer_id=customer.id, invoice_ids=[i.id for i in paid]))
        created += 1
    return created


def main():
    parser = argparse.ArgumentParser(description="Seed field-services billing demo data")
    parser.add_argument("--customers", type=int, default=25)
    parser.add_argument("--jobs-per-customer", type=int, default=8)
    parser.add_argument("--seed", type=int, default=None, help="Semilla aleatoria para datos reproducibles")
    parser.add_argument("--create-tables", action="store_true", help="Crear tablas antes de sembrar")
    args = parser.parse_args()

    if args.seed is not None:
        random.seed(args.seed)
    if args.create_tables:
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        print("Creating customers...")
        customers = create_customers(db, args.customers)
        print(f"Customers: {len(customers)}")

        print("Creating jobs...")
        create_jobs(db, customers, args.jobs_per_customer)

        print("Creating invoices from completed jobs...")
        counts = create_invoices(db, customers)
        for status, count in sorted(counts.items()):
            print(f"  {status}: {count}")

        print("Creating receipts for paid invoices...")
        receipts_created = create_receipts(db, customers)
        print(f"Receipts created: {receipts_created}")

        outstanding = InvoiceService(db).get_total_outstanding()
        print("\nSeed completed.")
        print(f"  Outstanding: {outstanding.total_outstanding} across {outstanding.invoice_count} invoices")
    finally:
        db.close()


if __name__ == "__main__":
    main()
