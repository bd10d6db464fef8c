from codewatch.exporters.csv_exporter import CSV_HEADERS, export_csv

__all__ = ["CSV_HEADERS", "export_csv"]
