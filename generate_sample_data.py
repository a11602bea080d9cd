import argparse
import csv
import random
from datetime import date, timedelta

SAMPLE_MERCHANTS = [
    ("Blue Bottle Coffee", "Downtown"),
    ("GRAB Ride", ""),
    ("FairPrice Mart", "Tampines"),
    ("City Electric Co", ""),
    ("Guardian Pharmacy", "Orchard"),
    ("Ramen Nagi", "Suntec"),
    ("Bookshop", ""),
]
SAMPLE_CARDS = ["Visa 1234", "Amex 9876", ""]
DATE_STYLES = ["%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d", "%Y-%m-%d %H:%M:%S"]


def build_rows(count, start):
    rows = []
    for i in range(count):
        description, location = random.choice(SAMPLE_MERCHANTS)
        txn_date = start + timedelta(days=i)
        amount = round(random.uniform(3, 250), 2)
        if random.random() < 0.1:
            amount = -amount
        rows.append([
            txn_date.strftime(random.choice(DATE_STYLES)),
            description,
            f"${amount:,.2f}" if random.random() < 0.5 else f"{amount:.2f}",
            location,
            random.choice(SAMPLE_CARDS),
        ])
    return rows


def main():
    parser = argparse.ArgumentParser(description="Write a sample expenses CSV for /api/import/csv")
    parser.add_argument("output", nargs="?", default="sample_expenses.csv")
    parser.add_argument("--rows", type=int, default=40)
    args = parser.parse_args()

    with open(args.output, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(["Transaction_Date", "Description", "Amount", "Location", "Credit_Card"])
        writer.writerows(build_rows(args.rows, date.today() - timedelta(days=args.rows)))
    print(f"Sample CSV written to {args.output} ({args.rows} rows)")


if __name__ == "__main__":
    main()
