"""命令行直接跑一次生成，便于在没有前端时联调生成服务。
使用方式（在项目根目录）：
  python scripts/run_generation.py --mode SOLVE --course notes.pdf --questions exam2023.pdf
  python scripts/run_generation.py --mode SUMMARY --summary chapter1.pdf --pdf out.pdf --author "Ada"
  python scripts/run_generation.py --mode REVIEW --course slides.pptx --txt flashdoc.txt
生成过程中按 Ctrl+C 取消：已收到的内容保留，仍可导出。
"""
import argparse
import io
import sys

# 避免 Windows 终端中文乱码
if sys.platform == "win32" and hasattr(sys.stdout, "reconfigure"):
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding="utf-8", errors="replace")
import asyncio
import mimetypes
import os
from pathlib import Path

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _project_root)
os.chdir(_project_root)

# 加载 .env
_env_file = os.path.join(_project_root, ".env")
if os.path.isfile(_env_file):
    with open(_env_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line and "=" in line and not line.startswith("#"):
                k, _, v = line.partition("=")
                k, v = k.strip(), v.strip()
                if k and os.environ.get(k) is None:
                    os.environ[k] = v

from app.core.errors import UnsupportedFileError
from app.schemas.study import AppView, FileCollection, ResultMode
from app.services.export_service import export_filename, export_pdf, export_text
from app.services.study_controller import StudySession
from app.services.upload_service import encode_upload


def _load_files(paths: list[str]):
    out = []
    for p in paths:
        path = Path(p)
        media_type, _ = mimetypes.guess_type(path.name)
        try:
            out.append(encode_upload(path.name, media_type, path.read_bytes()))
        except (OSError, UnsupportedFileError) as e:
            print(f"跳过 {p}: {e}", file=sys.stderr)
    return out


async def run(args) -> int:
    mode = ResultMode(args.mode)
    view = AppView.SUMMARY if mode == ResultMode.SUMMARY else AppView.SOLVER
    session = StudySession(view=view)
    session.add_files(FileCollection.COURSE, _load_files(args.course))
    session.add_files(FileCollection.QUESTIONS, _load_files(args.questions))
    session.add_files(FileCollection.SUMMARY, _load_files(args.summary))

    events = session.process(mode)
    try:
        async for ev in events:
            if ev.event == "chunk":
                print(ev.data["text"], end="", flush=True)
            elif ev.event == "status":
                print(f"[{ev.data.get('progress', 0)}%] {ev.data.get('message', '')}", file=sys.stderr)
            elif ev.event == "error":
                print(f"\n错误（{ev.data.get('kind')}）：{ev.data.get('message')}", file=sys.stderr)
                return 1
            elif ev.event == "cancelled":
                print("\n已取消。", file=sys.stderr)
    except asyncio.CancelledError:
        session.cancel()
    finally:
        await events.aclose()
    print()

    result = session.state.result
    if result is None:
        return 1
    source = session.source_file_name()
    if args.txt:
        Path(args.txt).write_bytes(export_text(result.text))
        print(f"已写入 {args.txt}", file=sys.stderr)
    if args.pdf:
        Path(args.pdf).write_bytes(
            export_pdf(result.text, mode=result.mode, source_name=source, author=args.author)
        )
        print(f"已写入 {args.pdf}（建议文件名：{export_filename(source, result.mode, 'pdf')}）", file=sys.stderr)
    return 0


def main():
    parser = argparse.ArgumentParser(description="调用生成服务，输出解题 / FlashDoc / 总结")
    parser.add_argument("--mode", choices=[m.value for m in ResultMode], default="SOLVE")
    parser.add_argument("--course", nargs="*", default=[], help="课程资料文件")
    parser.add_argument("--questions", nargs="*", default=[], help="往年试题文件（SOLVE 必填）")
    parser.add_argument("--summary", nargs="*", default=[], help="待总结文档（SUMMARY 必填）")
    parser.add_argument("--txt", default="", help="把原始结果写入该文本文件")
    parser.add_argument("--pdf", default="", help="把结果导出为该 PDF 文件")
    parser.add_argument("--author", default="", help="PDF 作者名")
    args = parser.parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\n已中断。", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
