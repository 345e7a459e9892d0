"""把一份已有的结果文本（TOPIC:、1.2 小标题、**加粗**、==高亮==）排版导出为 PDF，用于检查分页与页脚。
使用方式（在项目根目录）：
  python scripts/export_text_to_pdf.py result.txt
  python scripts/export_text_to_pdf.py result.txt --mode SUMMARY --source chapter1.pdf --author "Ada" --out out.pdf
"""
import argparse
import os
import sys
from pathlib import Path

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _project_root)

from app.schemas.study import ResultMode
from app.services.export_service import export_filename, layout_pdf, render_pdf


def main():
    parser = argparse.ArgumentParser(description="结果文本 -> 分页 PDF")
    parser.add_argument("input", help="结果文本文件（UTF-8）")
    parser.add_argument("--mode", choices=[m.value for m in ResultMode], default="SOLVE")
    parser.add_argument("--source", default="", help="标题区显示的来源文件名，默认取输入文件名")
    parser.add_argument("--author", default="", help="作者名")
    parser.add_argument("--out", default="", help="输出路径，默认按来源文件名 + 模式后缀生成")
    args = parser.parse_args()

    text = Path(args.input).read_text(encoding="utf-8")
    mode = ResultMode(args.mode)
    source = args.source or Path(args.input).name
    pages = layout_pdf(text, mode=mode, source_name=source, author=args.author)
    out = Path(args.out or export_filename(source, mode, "pdf"))
    out.write_bytes(render_pdf(pages))
    print(f"共 {len(pages)} 页，已写入 {out}")


if __name__ == "__main__":
    main()
