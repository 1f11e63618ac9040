from jinja2 import Environment

from heighliner_action.config import BuildOptions
from heighliner_action.parsing import BuildOutput

SUMMARY_TEMPLATE = """\
### heighliner build{% if opts.chain %}: `{{ opts.chain }}`{% endif %}

| Output | Value |
| --- | --- |
| Image ID | `{{ output.imageid }}` |
| Tag | `{{ output.tag | default("-", true) }}` |
| Digest | {% if output.digest %}`{{ output.digest }}`{% else %}-{% endif %} |
| Builder | {{ "buildkit" if opts.buildkit else "docker" }} |
{% if opts.platform %}| Platform | `{{ opts.platform }}` |
{% endif %}{% if opts.registry %}| Registry | `{{ opts.registry }}` |
{% endif %}"""


def render_summary(output: BuildOutput, opts: BuildOptions) -> str:
    """Render a markdown step summary for a finished build."""
    env = Environment(keep_trailing_newline=True)
    tpl = env.from_string(SUMMARY_TEMPLATE)
    return tpl.render(output=output, opts=opts)
