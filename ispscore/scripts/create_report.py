# ispscore/scripts/create_report.py
import argparse
import asyncio
import os
from datetime import date, datetime
from pathlib import Path

from ispscore.database import session_scope
from ispscore.erp_client import ErpClient, ErpNotConfigured
from ispscore.pipeline import ReportFilters, generate_report, tenant_settings
from ispscore.report_logic import write_txt_report
from ispscore.routers.deps import rules_for
from ispscore import models

# create_report.py está en ispscore/scripts/, los reportes quedan en ispscore/reports
APP_DIR = Path(__file__).resolve().parent.parent
REPORTS_DIR = Path(os.getenv("REPORTS_DIR", str(APP_DIR / "reports")))


def _date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Genera el reporte de puntuación de una empresa en .txt")
    parser.add_argument("company_id", type=int)
    parser.add_argument("--start", type=_date, default=date.today().replace(day=1))
    parser.add_argument("--end", type=_date, default=date.today())
    parser.add_argument("--sort-by", choices=("NAME", "POINTS"), default="POINTS")
    parser.add_argument("--date-type", choices=("opening", "closing"), default="closing")
    parser.add_argument("--analytical", action="store_true")
    parser.add_argument("--out", default=None, help="ruta del .txt (por defecto en REPORTS_DIR)")
    return parser.parse_args(argv)


async def _run(company: models.Company, rules, filters: ReportFilters):
    async with ErpClient(company.ixc_domain, company.ixc_token) as client:
        return await generate_report(client, filters, rules, tenant_settings(company))


def main(argv=None) -> int:
    args = parse_args(argv)
    filters = ReportFilters(
        start_date=args.start,
        end_date=args.end,
        sort_by=args.sort_by,
        date_type=args.date_type,
        report_type="ANALYTICAL" if args.analytical else "SYNTHETIC",
    )
    with session_scope() as session:
        company = session.get(models.Company, args.company_id)
        if company is None:
            print("Empresa no encontrada:", args.company_id)
            return 1
        try:
            outcome = asyncio.run(_run(company, rules_for(session, company.id), filters))
        except ErpNotConfigured as e:
            print("ERP sin configurar:", e)
            return 1
        title = f"Reporte {company.name} ({args.start:%d/%m/%Y} a {args.end:%d/%m/%Y})"

    if outcome.status != "ok":
        print("No se pudo generar el reporte:", outcome.error or outcome.status)
        return 1

    out = Path(args.out) if args.out else REPORTS_DIR / f"company_{args.company_id}_{args.start}_{args.end}.txt"
    write_txt_report(str(out), outcome.rows or [], title, analytical=args.analytical)
    print("Reporte generado:", out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
