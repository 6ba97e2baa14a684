"""命令行入口（Typer 应用）。"""
