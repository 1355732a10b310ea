"""Entry-point — run with `python run.py`."""

import click

from blindmark import create_app
from blindmark.watermark import embed_watermark, extract_watermark

app = create_app()


@app.cli.command("embed")
@click.argument("src")
@click.argument("dst")
@click.argument("passphrase")
def embed(src, dst, passphrase):
    """Watermark SRC into DST with PASSPHRASE (dev convenience)."""
    meta = embed_watermark(src, dst, passphrase)
    for k, v in meta.items():
        print(f"{k}: {v}")


@app.cli.command("verify")
@click.argument("path")
@click.argument("passphrase")
def verify(path, passphrase):
    """Check PATH for the watermark derived from PASSPHRASE."""
    result = extract_watermark(path, passphrase)
    print(f"watermarked: {result['is_watermarked']}  confidence: {result['confidence']:.3f}")


if __name__ == "__main__":
    app.run(debug=True, port=5000)
