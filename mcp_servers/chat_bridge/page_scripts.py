"""JavaScript snippets evaluated in the chat page.

Each builder returns one self-contained expression whose value is plain JSON.
Scripts only gather raw facts or perform one DOM action; the interpretation
of what was read happens in Python against ``rules``.
"""

from __future__ import annotations

import json

from . import rules


def _js(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


def content_state_script() -> str:
    """Count of content blocks plus a prefix of the last one."""
    return f"""
(() => {{
  const blocks = document.querySelectorAll({_js(rules.CONTENT_BLOCK_SELECTOR)});
  const last = blocks[blocks.length - 1];
  return {{
    count: blocks.length,
    lastText: last ? last.innerText.substring(0, {rules.SNAPSHOT_PREFIX_CHARS}) : ''
  }};
}})()
"""


def status_read_script() -> str:
    """One structured read of everything completion detection needs."""
    return f"""
(() => {{
  const stopTokens = {_js(list(rules.STOP_LABEL_TOKENS))};
  let hasStopButton = false;
  for (const btn of document.querySelectorAll('button')) {{
    const label = (btn.getAttribute('aria-label') || '').toLowerCase();
    const text = (btn.innerText || '').trim().toLowerCase();
    const looksLikeStop = btn.querySelector('rect') !== null ||
      stopTokens.some(t => label.includes(t)) || text === {_js(rules.STOP_BUTTON_TEXT)};
    if (looksLikeStop && btn.offsetParent !== null && !btn.disabled) {{
      hasStopButton = true;
      break;
    }}
  }}
  const hasLoading = document.querySelector({_js(", ".join(rules.LOADING_SELECTORS))}) !== null;
  const main = document.querySelector('main') || document.body;
  const blocks = [...main.querySelectorAll({_js(rules.CONTENT_BLOCK_SELECTOR)})].map(el => ({{
    text: (el.innerText || '').trim(),
    chrome: el.closest({_js(rules.CONTENT_CHROME_ANCESTORS)}) !== null
  }}));
  return {{
    hasStopButton,
    hasLoading,
    bodyText: document.body ? document.body.innerText : '',
    mainText: main ? main.innerText : '',
    blocks
  }};
}})()
"""


def find_input_script() -> str:
    """First matching prompt-input selector, or null."""
    return f"""
(() => {{
  for (const sel of {_js(list(rules.INPUT_SELECTORS))}) {{
    if (document.querySelector(sel) !== null) return sel;
  }}
  return null;
}})()
"""


def inject_prompt_script(selector: str, prompt: str) -> str:
    """Put ``prompt`` into the input, in a way framework-managed inputs notice."""
    return f"""
(() => {{
  const el = document.querySelector({_js(selector)});
  if (!el) return false;
  el.focus();
  if (el.isContentEditable) {{
    document.execCommand('selectAll', false, null);
    document.execCommand('insertText', false, {_js(prompt)});
    return true;
  }}
  el.value = {_js(prompt)};
  el.dispatchEvent(new Event('input', {{ bubbles: true }}));
  return true;
}})()
"""


def _input_text_js(selector: str) -> str:
    return (
        f"const el = document.querySelector({_js(selector)});"
        "const value = el ? (el.isContentEditable ? el.innerText : el.value) || '' : '';"
    )


def input_has_content_script(selector: str) -> str:
    return f"(() => {{ {_input_text_js(selector)} return value.trim().length > 0; }})()"


def key_commit_script(selector: str) -> str:
    """Press and release Enter on the input."""
    return f"""
(() => {{
  const el = document.querySelector({_js(selector)});
  if (!el) return false;
  el.focus();
  const init = {{ key: 'Enter', code: 'Enter', keyCode: 13, which: 13, bubbles: true, cancelable: true }};
  el.dispatchEvent(new KeyboardEvent('keydown', init));
  el.dispatchEvent(new KeyboardEvent('keyup', init));
  return true;
}})()
"""


def submission_verified_script(selector: str) -> str:
    """True once the input emptied or the page shows it is working."""
    return f"""
(() => {{
  {_input_text_js(selector)}
  if (el && value.trim().length < {rules.EMPTIED_INPUT_CHARS}) return true;
  const loading = document.querySelector({_js(", ".join(rules.SUBMIT_LOADING_SELECTORS))}) !== null;
  const thinking = document.body ? document.body.innerText.includes('Thinking') : false;
  return loading || thinking;
}})()
"""


def click_submit_control_script(selector: str) -> str:
    """Click a submit control: known selectors first, then the rightmost button near the input."""
    return f"""
(() => {{
  for (const sel of {_js(list(rules.SUBMIT_SELECTORS))}) {{
    const btn = document.querySelector(sel);
    if (btn && !btn.disabled && btn.offsetParent !== null) {{
      btn.click();
      return {{ success: true, method: 'selector', selector: sel }};
    }}
  }}
  const input = document.querySelector({_js(selector)});
  if (!input) return {{ success: false, reason: 'no input element' }};
  const excluded = {_js(list(rules.SUBMIT_EXCLUDE_LABELS))};
  const seen = new Set();
  const candidates = [];
  let parent = input.parentElement;
  for (let i = 0; i < {rules.SUBMIT_SEARCH_DEPTH} && parent; i++) {{
    for (const btn of parent.querySelectorAll('button')) {{
      if (seen.has(btn)) continue;
      seen.add(btn);
      if (btn.disabled || btn.offsetParent === null) continue;
      const label = (btn.getAttribute('aria-label') || '').toLowerCase();
      if (excluded.some(word => label.includes(word))) continue;
      const rect = btn.getBoundingClientRect();
      if (rect.width > 0 && rect.height > 0) candidates.push({{ btn, x: rect.right }});
    }}
    parent = parent.parentElement;
  }}
  if (!candidates.length) return {{ success: false, reason: 'no button found' }};
  candidates.sort((a, b) => b.x - a.x);
  candidates[0].btn.click();
  return {{ success: true, method: 'position' }};
}})()
"""


def form_submit_script() -> str:
    return """
(() => {
  const form = document.querySelector('form');
  if (!form) return false;
  form.dispatchEvent(new Event('submit', { bubbles: true, cancelable: true }));
  return true;
})()
"""


def stop_script() -> str:
    """Click a labelled Stop/Cancel button, else a button with a square icon."""
    return f"""
(() => {{
  for (const btn of document.querySelectorAll({_js(", ".join(rules.STOP_CLICK_SELECTORS))})) {{
    btn.click();
    return true;
  }}
  for (const btn of document.querySelectorAll('button')) {{
    if (btn.querySelector('svg rect')) {{
      btn.click();
      return true;
    }}
  }}
  return false;
}})()
"""


def mode_read_script() -> str:
    names = [m.capitalize() for m in rules.MODES]
    return f"""
(() => {{
  for (const mode of {_js(names)}) {{
    const btn = document.querySelector('button[aria-label="' + mode + '"]');
    if (btn && btn.getAttribute('data-state') === 'checked') return mode.toLowerCase();
  }}
  const dropdown = document.querySelector({_js(rules.MODE_DROPDOWN_SELECTOR)});
  if (dropdown) {{
    const text = (dropdown.innerText || '').toLowerCase();
    for (const mode of {_js(list(rules.MODES))}) {{
      if (text.includes(mode)) return mode;
    }}
  }}
  return 'search';
}})()
"""


def mode_click_script(mode: str) -> str:
    """Click the mode button, or open the mode dropdown when the layout is narrow."""
    return f"""
(() => {{
  const btn = document.querySelector('button[aria-label=' + {_js(_js(mode.capitalize()))} + ']');
  if (btn) {{
    btn.click();
    return {{ success: true, method: 'button' }};
  }}
  const modes = {_js(list(rules.MODES))};
  for (const b of document.querySelectorAll('button')) {{
    const text = (b.innerText || '').toLowerCase();
    if (modes.some(m => text.includes(m)) && b.querySelector('svg')) {{
      b.click();
      return {{ success: true, method: 'dropdown-open', needsSelect: true }};
    }}
  }}
  return {{ success: false, error: 'Mode selector not found' }};
}})()
"""


def mode_select_script(mode: str) -> str:
    return f"""
(() => {{
  for (const item of document.querySelectorAll({_js(rules.MODE_MENU_ITEM_SELECTOR)})) {{
    if ((item.innerText || '').toLowerCase().includes({_js(mode)})) {{
      item.click();
      return {{ success: true }};
    }}
  }}
  return {{ success: false, error: 'Mode option not found in dropdown' }};
}})()
"""


def file_inputs_script() -> str:
    return """
(() => {
  const inputs = document.querySelectorAll('input[type="file"]');
  const selectors = [];
  inputs.forEach(input => {
    let sel = 'input[type="file"]';
    if (input.id) sel = '#' + input.id;
    else if (input.name) sel = 'input[name="' + input.name + '"]';
    else if (input.className) sel = 'input[type="file"].' + String(input.className).split(' ')[0];
    selectors.push(sel);
  });
  return { count: inputs.length, selectors };
})()
"""


__all__ = [
    "click_submit_control_script",
    "content_state_script",
    "file_inputs_script",
    "find_input_script",
    "form_submit_script",
    "inject_prompt_script",
    "input_has_content_script",
    "key_commit_script",
    "mode_click_script",
    "mode_read_script",
    "mode_select_script",
    "status_read_script",
    "stop_script",
    "submission_verified_script",
]
